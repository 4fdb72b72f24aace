"""Outbound alarm notifications."""

from __future__ import annotations

__all__ = ["WebhookNotifier"]

from .webhook import WebhookNotifier
