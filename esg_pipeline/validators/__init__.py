"""
Validators for extracted records.

- record_normalizer: schema completion, legacy-shape migration and
  fallback records for failed extractions
"""

from .record_normalizer import NormalizationContext, build_fallback_record, normalize

__all__ = ["NormalizationContext", "build_fallback_record", "normalize"]
