"""
API Gateway Service package for the WCAGAI Access Layer.

The gateway fronts client requests, enforcing:
- Authentication: signed session tokens carrying plan tier and credits
- Rate limiting: fixed-window request budgets per plan tier
- Feature gating: plan tier allow-lists
- Credits: atomic per-identity AI fix balances

Structure:
- app.main: FastAPI app, routes, and pipeline wiring.
- app.auth: Token issuing and verification.
- app.ratelimit: Tier limiter and counter backends.
- app.entitlements: Feature gate.
- app.credits: Credit stores and gate.
- app.events: Revenue event logging.
- app.domain: Plan tables and the access pipeline.
- app.adapters: Payment and completion provider clients.
- app.billing: Subscriptions, credit purchases, revenue reporting.
- app.remediation: AI fix generation with fallback.
"""
