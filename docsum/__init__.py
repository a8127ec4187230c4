"""
docsum: watch folders of PDFs and images and summarize them.

Text is extracted with pypdf (falling back to tesseract OCR on scanned
pages), then summarized with keywords by OpenAI or a local Ollama model.
"""

__version__ = "0.1.0"
