"""Cross-device intake form handoff.

Start a form on one device, photograph the handwritten paper form with
another, and have the OCR'd fields merged back into the first device's
form through a shared submission queue and client-side polling.
"""
