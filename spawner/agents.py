"""Agent targets that run inside spawned child processes.

A target is called as ``target(index, channel, params)`` where ``channel`` is
the :class:`~spawner.proc.AgentChannel` used to report ready/error signals and
``params`` is the ``[agent]`` config section, passed through untouched.
Returning normally exits the child with status 0.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import Dict, List, Optional

import discord

DEFAULT_HEARTBEAT_SECONDS = 60.0


def _float_param(params: Dict[str, str], key: str, default: Optional[float]) -> Optional[float]:
    raw = params.get(key)
    if raw is None or str(raw).strip() == "":
        return default
    return float(raw)


def idle_agent(index: int, channel, params: Dict[str, str]) -> None:
    """Report ready and keep the process alive, logging a periodic heartbeat."""
    logger = logging.getLogger(f"Agent-{index}")
    heartbeat = _float_param(params, "heartbeat_sec", DEFAULT_HEARTBEAT_SECONDS)
    if heartbeat is None or heartbeat <= 0:
        raise ValueError("heartbeat_sec must be positive")
    lifetime = _float_param(params, "lifetime_sec", None)

    channel.ready(f"idle-{index}")
    started = time.monotonic()
    while True:
        elapsed = time.monotonic() - started
        if lifetime is not None and elapsed >= lifetime:
            break
        wait = heartbeat if lifetime is None else min(heartbeat, lifetime - elapsed)
        time.sleep(wait)
        logger.debug("Agent %s heartbeat", index)
    logger.info("Agent %s finished after %.1fs", index, time.monotonic() - started)


def token_for(index: int, params: Dict[str, str]) -> Optional[str]:
    """Pick the Discord token for an agent: a per-index list wins over a shared token."""
    tokens = [item.strip() for item in params.get("discord_tokens", "").split(",") if item.strip()]
    if tokens:
        return tokens[index] if index < len(tokens) else None
    return params.get("discord_token") or None


def discord_agent(index: int, channel, params: Dict[str, str]) -> None:
    logger = logging.getLogger(f"Agent-{index}")
    token = token_for(index, params)
    if not token:
        logger.warning("No Discord token configured for agent %s; running idle loop", index)
        idle_agent(index, channel, params)
        return

    intents = discord.Intents.default()
    client = discord.Client(intents=intents)
    failures: List[str] = []

    @client.event
    async def on_ready():
        logger.info("Agent %s connected to Discord as %s", index, client.user)
        channel.ready(str(client.user))

    @client.event
    async def on_error(event_method: str, *args, **kwargs):
        exc = sys.exc_info()[1]
        logger.error("Agent %s error in %s: %s", index, event_method, exc)
        channel.error(f"{event_method}: {exc}")
        failures.append(event_method)
        await client.close()

    @client.event
    async def on_disconnect():
        logger.info("Agent %s disconnected from Discord", index)

    client.run(token, log_handler=None)
    if failures:
        raise SystemExit(1)


__all__ = ["discord_agent", "idle_agent", "token_for"]
