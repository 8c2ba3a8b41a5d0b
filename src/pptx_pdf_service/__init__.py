"""
PPTX to PDF conversion service package.

This module provides a FastAPI application that converts presentations stored
in an S3 bucket to PDF with LibreOffice and writes the result back to the
bucket. The conversion endpoint is available at `/convert`.
"""

__all__ = ["__version__"]

__version__ = "1.0.0"
