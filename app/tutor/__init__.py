"""AI Tutoring Router.

Routes exam-prep tutoring queries across several LLM providers with:
  - Key Rotation Ledger (per-key quota windows, round-robin)
  - Provider Adapters (Gemini, Cohere, Groq protocol differences)
  - File Preprocessor (PDF text, OCR, inline images)
  - Fallback Dispatcher (priority order, first success wins)
  - Local Fallback Generator (template guidance when nothing answers)
"""
