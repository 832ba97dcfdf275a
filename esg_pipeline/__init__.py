"""
ESG report extraction pipeline.

Turns corporate sustainability reports (PDF or website) into schema-complete
ESG records by prompting Claude and recovering structured data from its
free-text responses.
"""

__version__ = "0.4.0"
