"""
Documents module.

- Policy/procedure library with explicit version history
- Rollouts fan out one acknowledgment per targeted user
- Acknowledgments move pending -> viewed -> acknowledged -> signed, never back
"""
