"""
Check-in Platform
Completion service integration.

Submodules:
    - gateway: LLM Gateway (provider routing, retry, cost tracking)
    - prompts: directive builders per call site
    - contracts: strict response schemas and parsing
"""
