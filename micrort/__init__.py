"""Microservice toolkit: service command line and shell, chatops bot, request stats, RPC over HTTP, tokens and update notifications."""

__version__ = "0.1.0"