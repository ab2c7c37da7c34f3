# mpv remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Computer actions triggered from the remote: shutdown, reboot, quit and
display power.

The server receives a SystemActions instance and calls run(); nothing in
the status or notification path depends on it.  Display commands are picked
from the desktop session (KDE, GNOME, X11, Wayland) at call time.
"""

import asyncio
import logging
import os
import platform

log = logging.getLogger(__name__)

ACTIONS = ("shutdown", "reboot", "quit", "disable-display", "enable-display")

WIN_SHUTDOWN_COMMAND = "shutdown /s /t 1"
WIN_REBOOT_COMMAND = "shutdown /r /t 1"
UNIX_SHUTDOWN_COMMAND = "/usr/sbin/shutdown now"
UNIX_REBOOT_COMMAND = "/usr/sbin/reboot"

WAKE_CHECK_DELAY = 1.0  # seconds for a launched ydotoold to appear


def _session(env) -> tuple[str, str]:
    desktop = (env.get("XDG_CURRENT_DESKTOP") or "").lower()
    session = (env.get("XDG_SESSION_TYPE") or "").lower()
    return desktop, session


def display_off_command(env=None) -> str:
    desktop, session = _session(os.environ if env is None else env)
    if "kde" in desktop:
        # Works for both X11 and Wayland
        return ("/bin/sleep 1 && /bin/dbus-send --session --print-reply "
                "--dest=org.kde.kglobalaccel /component/org_kde_powerdevil "
                "org.kde.kglobalaccel.Component.invokeShortcut string:'Turn Off Screen'")
    if "gnome" in desktop:
        return ("dbus-send --session --dest=org.gnome.ScreenSaver --type=method_call "
                "/org/gnome/ScreenSaver org.gnome.ScreenSaver.SetActive boolean:true")
    if session == "x11":
        return "sleep 0.5 && xset dpms force off"
    return "xset dpms force off"


def display_on_command(env=None) -> str:
    desktop, session = _session(os.environ if env is None else env)
    if session == "wayland":
        # No DPMS on Wayland; wiggle the pointer via ydotool to wake the screen
        return "ydotool mousemove -x 1 -y 1 && ydotool mousemove -x -1 -y -1"
    if session == "x11":
        return "xset dpms force on"
    return "xset dpms force on 2>/dev/null || xdotool mousemove 0 0"


class SystemActions:
    """Runs computer-level actions on behalf of the remote."""

    def __init__(self, system: str | None = None):
        self.system = system or platform.system()

    @property
    def is_windows(self) -> bool:
        return self.system == "Windows"

    async def _shell(self, cmd: str) -> bool:
        """Run a shell command, log the outcome, never raise."""
        log.info("Executing: %s", cmd)
        try:
            proc = await asyncio.create_subprocess_shell(
                cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except OSError as e:
            log.error("Could not run %s: %s", cmd, e)
            return False
        if proc.returncode != 0:
            log.error("Command failed (rc=%d): %s", proc.returncode,
                      stderr.decode(errors="replace").strip())
            return False
        if stdout:
            log.debug("stdout: %s", stdout.decode(errors="replace").strip())
        return True

    async def run(self, action: str, player=None) -> bool:
        """Perform *action*; stops playback first where the action ends the session."""
        if action not in ACTIONS:
            raise ValueError(f"Invalid action: {action}")

        if action in ("shutdown", "reboot", "quit") and player is not None:
            try:
                # Stopping first lets the mpv-side script save playback position
                await player.command("stop")
            except Exception as e:
                log.warning("Could not stop playback before %s: %s", action, e)

        if action == "shutdown":
            return await self._shell(WIN_SHUTDOWN_COMMAND if self.is_windows else UNIX_SHUTDOWN_COMMAND)
        if action == "reboot":
            return await self._shell(WIN_REBOOT_COMMAND if self.is_windows else UNIX_REBOOT_COMMAND)
        if action == "quit":
            return True
        if self.is_windows:
            log.info("Display power control not supported on Windows")
            return False
        if action == "disable-display":
            return await self._shell(display_off_command())
        return await self._shell(display_on_command())

    async def check_wake_support(self):
        """On Wayland, display wake needs ydotoold; start it if it isn't running."""
        _, session = _session(os.environ)
        if session != "wayland":
            return
        if await self._shell("pgrep ydotoold"):
            log.info("ydotoold detected - display wake support enabled")
            return
        log.info("ydotoold not detected. Attempting to start...")
        # Backgrounded, so the exit status says nothing; look for the process
        await self._shell("sudo -n ydotoold >/dev/null 2>&1 &")
        await asyncio.sleep(WAKE_CHECK_DELAY)
        if await self._shell("pgrep ydotoold"):
            log.info("ydotoold launched - display wake support enabled")
        else:
            log.warning("Display wake will not work; run 'sudo ydotoold' or allow it "
                        "in sudoers to enable it")
