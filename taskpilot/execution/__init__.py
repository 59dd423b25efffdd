#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Task execution: planning, step loop, plan revision, verification and events.

Import submodules directly (``taskpilot.execution.executor`` etc.). The tools
layer imports ``taskpilot.execution.cancellation``, so nothing is re-exported here.
"""
