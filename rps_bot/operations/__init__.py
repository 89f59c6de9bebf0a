"""
Operations Layer

Business logic that composes Database methods into transactional workflows.

- PlayerOperations: Player lifecycle and Discord user integration
- SessionOperations: Commit-reveal wager lifecycle and settlement
"""
