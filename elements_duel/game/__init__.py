"""Commit-reveal protocol: records, commitment codec, rules and the game engine."""
