"""
Draft engine for broker email replies.

Provides:
- Context building from deal, spaces and thread
- AI generation and refinement with a fact-check pass
- Draft lifecycle: versions, regeneration quota, review and send
"""
