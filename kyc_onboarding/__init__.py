"""Merchant KYC onboarding service.

Identity document OCR (Google Vision with a Tesseract fallback), PAN and
Aadhaar field extraction with confidence scoring, and the merchant
onboarding status workflow from draft through bank approval.
"""

__version__ = "1.0.0"
