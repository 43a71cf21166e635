"""Capability agent hosting."""

from .base import CapabilityAgent, CapabilityHandler

__all__ = ['CapabilityAgent', 'CapabilityHandler']
