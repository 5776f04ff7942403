"""Order webhook inbound pipeline.

Receives "order created" notifications from the commerce platform.
Each delivery is rate-limited, signature-verified, normalized, matched
against live listings and applied idempotently.
"""
