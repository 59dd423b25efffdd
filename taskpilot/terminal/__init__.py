#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Terminal output for the taskpilot CLI."""

from taskpilot.terminal.formatting import ConsoleEventSink, colorize, create_header

__all__ = ["ConsoleEventSink", "colorize", "create_header"]
