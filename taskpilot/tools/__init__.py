#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Tool dispatch: circuit breaker, deduplication, file tracking and the mediator."""
