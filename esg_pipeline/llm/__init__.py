"""
Model clients and prompt construction.

- llm_client: direct completions through LiteLLM
- batch_client: Message Batches through the Anthropic SDK
- prompt_builder: system/user prompts and industry XML templates
"""
