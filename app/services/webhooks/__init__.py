"""
Webhook ingress: payload normalisation and batch processing.
"""
