"""
Evidence pipeline for phone trust.

Each subpackage turns one kind of evidence into structured facts:
sms (transaction history), ussd (profile screenshots) and certainty
(source coefficients applied to the resulting features).
"""
