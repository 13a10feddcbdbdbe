"""Skill runners."""

from .prd import PrdSkillRunner

__all__ = ["PrdSkillRunner"]
