"""Async helper for short-lived external commands."""

import asyncio
from typing import List, Optional
from ..ports.control_utility_port import CommandOutput


async def run_command(argv: List[str], timeout: Optional[float] = None) -> CommandOutput:
    """Run a command to completion and capture its text output.
    
    Raises:
        OSError: executable missing or not startable
        asyncio.TimeoutError: timeout given and exceeded (the process is killed)
    """
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    return CommandOutput(
        returncode=process.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
