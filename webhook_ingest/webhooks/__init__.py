"""Webhook inbound pipeline.

Receives webhooks from Figma and Stripe.
Each webhook is signature-verified over its raw body, normalized,
stored at most once per (sender, external id), then dispatched.
"""
