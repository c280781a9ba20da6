"""
COMMERCE SHARED KERNEL

Non-model helpers shared by orders, subscriptions and payments:
- money quantisation
- domain error taxonomy
- reference generation
"""
