"""
Extractors module for website sources.

This module contains components for turning web pages into prompt-ready text:
- website_content: fetch, main-text extraction and sustainability headings
"""

from .website_content import WebsiteContent, WebsiteContentExtractor, format_for_prompt

__all__ = ["WebsiteContent", "WebsiteContentExtractor", "format_for_prompt"]
