# bot.py
import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

import discord
from discord.commands import Option

import config
from commands import CommandPolicy
from dispatcher import CommandDispatcher
from effects import EFFECTS
from flows import RankDiscovery, RankFlow, is_valid_handle
from game_session import GameSession
from notifier import BackgroundNotifier
from prober import ServerProbe
from status_server import StatusServer
from store import RecordStore, STAT_BLOCKED, STAT_COMMANDS, STAT_DONATORS

log = logging.getLogger(__name__)

ACCESS_DENIED = "⛔ Access denied."
MAX_BUTTONS = 25

# --- Global Variables & Setup ---
settings = config.load_settings()
GUILD_IDS = [settings.guild_id] if settings.guild_id else None

shutdown_event = asyncio.Event()
intents = discord.Intents.default()
bot = discord.Bot(intents=intents)

store = RecordStore(settings.data_path)
policy = CommandPolicy(settings.commands_path)
probe = ServerProbe(settings.mc_host, settings.mc_port)
game_session = GameSession(settings.panel_url, settings.panel_api_key,
                           settings.panel_server_id, probe)
discovery = RankDiscovery(store, game_session.send_line)
status_server = StatusServer(game_session, probe, store, policy,
                             host=settings.http_host, port=settings.http_port,
                             admins=settings.game_admins)


async def notify_operator(text: str) -> None:
    """DMs the operator. Failures are logged and dropped."""
    try:
        user = await bot.get_or_fetch_user(settings.operator_id)
        if user is None:
            log.error(f"Operator {settings.operator_id} not found, dropping: {text}")
            return
        await user.send(text)
    except discord.HTTPException as e:
        log.error(f"Operator notification failed: {e}")
    except Exception:
        log.exception("Operator notification failed")


notify_later = BackgroundNotifier(notify_operator)

dispatcher = CommandDispatcher(store, policy, game_session.send_line,
                               admins=settings.game_admins, notify=notify_later)


def is_operator(user: Optional[discord.abc.User]) -> bool:
    return user is not None and user.id == settings.operator_id


async def deny_non_operator(ctx: discord.ApplicationContext) -> bool:
    if is_operator(ctx.author):
        return False
    log.warning(f"Refused {ctx.command} from {ctx.author}")
    await ctx.respond(ACCESS_DENIED, ephemeral=True)
    return True


# --- Signal Handler & Events ---
def handle_signal(sig, frame):
    signal_name = signal.Signals(sig).name
    log.warning(f"Signal {sig} ({signal_name}) received.")
    shutdown_event.set()


@bot.event
async def on_ready():
    log.info(f'{bot.user.name} ready.')
    if GUILD_IDS:
        log.info(f'Operating in guild {settings.guild_id}')
    else:
        log.warning("No GUILD_ID. Global commands.")
    if not shutdown_event.is_set():
        await game_session.start()


@bot.event
async def on_disconnect():
    log.warning("Bot disconnected.")


@bot.event
async def on_resumed():
    log.info("Bot resumed.")


# --- Game Events ---
async def on_game_ready():
    await notify_later("✅ **Game session connected**\n🔒 Donator commands are live.")


async def on_game_disconnect():
    await notify_later("⚠️ Game session dropped, reconnecting...")


async def on_game_failed(attempts: int):
    await notify_later(f"❌ **Game session gave up** after {attempts} attempts. "
                       f"Use /reconnect once the server is back.")


async def on_player_join(handle: str):
    if handle == settings.mc_username:
        return
    caps = dispatcher.resolve_capabilities(handle)
    greeting = f"👋 Welcome, {handle}!"
    if caps.is_admin:
        greeting += " 👑 OWNER"
    elif caps.donator:
        greeting += f" ({caps.tier})"
    await game_session.send_line(greeting)
    await notify_later(f"🚀 {'👑' if caps.is_admin else '🎮'} **{handle}** joined")


async def on_game_line(line: str):
    await discovery.handle_line(line)
    await dispatcher.handle_line(line)


game_session.on("ready", on_game_ready)
game_session.on("disconnect", on_game_disconnect)
game_session.on("failed", on_game_failed)
game_session.on("player_join", on_player_join)
game_session.on("line", on_game_line)


# --- Rank Discovery ---
class RankSelectView(discord.ui.View):
    """One button per discovered rank; the first click wins."""

    def __init__(self, flow: RankFlow):
        super().__init__(timeout=300)
        self.flow_id = flow.flow_id
        self.target = flow.target
        for rank in flow.found[:MAX_BUTTONS]:
            button = discord.ui.Button(label=f"🎁 {rank}", style=discord.ButtonStyle.primary)
            button.callback = self._make_callback(rank)
            self.add_item(button)

    def _make_callback(self, rank: str):
        async def callback(interaction: discord.Interaction):
            if not is_operator(interaction.user):
                await interaction.response.send_message(ACCESS_DENIED, ephemeral=True)
                return
            if not await discovery.select(self.flow_id, rank):
                await interaction.response.send_message(
                    "⚠️ This selection expired or the game session is offline.", ephemeral=True)
                return
            self.disable_all_items()
            await interaction.response.edit_message(
                content=f"✅ **Granted!** {self.target} → {rank}", view=self)
            self.stop()
        return callback


@bot.event
async def on_message(message: discord.Message):
    if message.author.bot or message.guild is not None:
        return
    try:
        if not is_operator(message.author):
            await message.channel.send(ACCESS_DENIED)
            return

        handle = message.content.strip()
        if not is_valid_handle(handle):
            await message.channel.send("❌ Handle must be 2-16 letters, digits or underscores.")
            return
        if not game_session.is_ready:
            await message.channel.send("❌ Game session offline.")
            return

        flow = await discovery.start(handle)
        await message.channel.send(f"🔎 Scanning ranks for **{handle}**...")
        found = await discovery.wait(flow)
        if flow.cancelled:
            return
        if not found:
            await message.channel.send(
                "❌ No groups found. Make sure the console can run /lp listgroups and try again.")
            return
        await message.channel.send(f"📋 **Ranks for {handle}**", view=RankSelectView(flow))
    except Exception:
        log.exception(f"Error handling operator DM: {message.content!r}")


# --- Bot Commands ---
@bot.slash_command(guild_ids=GUILD_IDS, name="status", description="Shows game session and server status.")
async def status_command(ctx: discord.ApplicationContext):
    log.info(f"/status by {ctx.author}")
    if await deny_non_operator(ctx):
        return
    if game_session.is_ready:
        session_status = "✅ Auth & Listening"
    elif game_session.is_connected:
        session_status = "🟠 Connected (Pending Auth)"
    else:
        session_status = f"❌ {game_session.state.value.capitalize()}"
    embed = discord.Embed(title="📊 Status", color=discord.Color.blue())
    embed.add_field(name="Game session", value=session_status, inline=True)
    embed.add_field(name="Server", value="✅ online" if probe.is_online else "❌ offline", inline=True)
    embed.add_field(name="Reconnects", value=str(game_session.reconnect_attempts), inline=True)
    embed.add_field(name="Admins", value=", ".join(settings.game_admins) or "-", inline=False)
    embed.add_field(name="Commands run", value=str(store.stats.get(STAT_COMMANDS, 0)), inline=True)
    embed.set_footer(text=f"{settings.mc_host}:{settings.mc_port} · {settings.mc_version}")
    embed.timestamp = datetime.now(timezone.utc)
    await ctx.respond(embed=embed, ephemeral=True)


@bot.slash_command(guild_ids=GUILD_IDS, name="adddonator", description="Grants a donator tier to a player.")
async def add_donator_command(
    ctx: discord.ApplicationContext,
    handle: str = Option(str, "Minecraft username (case-sensitive)"),
    tier: str = Option(str, "Tier name, e.g. VIP"),
    admin: bool = Option(bool, "Give full administrator bypass", required=False, default=False),
):
    log.info(f"/adddonator {handle} {tier} by {ctx.author}")
    if await deny_non_operator(ctx):
        return
    handle = handle.strip()
    if not is_valid_handle(handle):
        await ctx.respond("❌ Invalid username format.", ephemeral=True)
        return
    tier = tier.strip().upper()
    if not tier:
        await ctx.respond(f"❌ Tier required. Known tiers: {', '.join(policy.ranks()) or '-'}",
                          ephemeral=True)
        return
    store.add_donator(handle, tier, admin=admin)
    note = "" if policy.rank_level(tier) else " (⚠️ unknown tier, level 0)"
    await ctx.respond(f"✅ **Added!** {handle} - {tier}{note}", ephemeral=True)


@bot.slash_command(guild_ids=GUILD_IDS, name="removedonator", description="Removes a donator.")
async def remove_donator_command(
    ctx: discord.ApplicationContext,
    handle: str = Option(str, "Minecraft username (case-sensitive)"),
):
    log.info(f"/removedonator {handle} by {ctx.author}")
    if await deny_non_operator(ctx):
        return
    handle = handle.strip()
    if store.remove_donator(handle):
        await ctx.respond(f"✅ Removed: {handle}", ephemeral=True)
    else:
        await ctx.respond(f"❌ Not found: {handle}", ephemeral=True)


@bot.slash_command(guild_ids=GUILD_IDS, name="promote", description="Moves an existing donator to another tier.")
async def promote_command(
    ctx: discord.ApplicationContext,
    handle: str = Option(str, "Minecraft username (case-sensitive)"),
    tier: str = Option(str, "New tier name"),
):
    log.info(f"/promote {handle} {tier} by {ctx.author}")
    if await deny_non_operator(ctx):
        return
    handle = handle.strip()
    tier = tier.strip().upper()
    if store.promote_donator(handle, tier):
        await ctx.respond(f"✅ {handle} → {tier}", ephemeral=True)
    else:
        await ctx.respond(f"❌ Not a donator: {handle}", ephemeral=True)


@bot.slash_command(guild_ids=GUILD_IDS, name="donators", description="Lists all donators.")
async def donators_command(ctx: discord.ApplicationContext):
    log.info(f"/donators by {ctx.author}")
    if await deny_non_operator(ctx):
        return
    donators = store.all_donators()
    if not donators:
        await ctx.respond("❌ No donators yet.", ephemeral=True)
        return
    lines = [f"• `{handle}` - **{d.tier}**{' 👑' if d.admin else ''}" for handle, d in donators.items()]
    body = "\n".join(lines)
    if len(body) > 1900:
        body = body[:1900] + "\n..."
    await ctx.respond(f"🎁 **Donators ({len(donators)})**\n{body}", ephemeral=True)


@bot.slash_command(guild_ids=GUILD_IDS, name="logs", description="Shows recent command audit entries.")
async def logs_command(
    ctx: discord.ApplicationContext,
    limit: int = Option(int, "Number of entries", required=False, default=15, min_value=1, max_value=50),
):
    log.info(f"/logs by {ctx.author} (limit={limit})")
    if await deny_non_operator(ctx):
        return
    entries = store.recent_logs(limit)
    if not entries:
        await ctx.respond("Audit log empty.", ephemeral=True)
        return
    lines = []
    for entry in entries:
        when = datetime.fromtimestamp(entry["timestamp"]).strftime("%H:%M:%S")
        status = "✅" if entry["allowed"] else "❌"
        lines.append(f"{status} {when} - {entry['player']} → !{entry['command']} ({entry['reason']})")
    body = "\n".join(lines)
    if len(body) > 1900:
        body = f"... (truncated)\n{body[-1900:]}"
    await ctx.respond(f"📋 **Logs**\n{body}", ephemeral=True)


@bot.slash_command(guild_ids=GUILD_IDS, name="stats", description="Shows aggregate counters.")
async def stats_command(ctx: discord.ApplicationContext):
    log.info(f"/stats by {ctx.author}")
    if await deny_non_operator(ctx):
        return
    stats = store.stats
    await ctx.respond(
        "📈 **Stats**\n"
        f"Commands: {stats.get(STAT_COMMANDS, 0)}\n"
        f"Donators granted: {stats.get(STAT_DONATORS, 0)}\n"
        f"Blocked attempts: {stats.get(STAT_BLOCKED, 0)}",
        ephemeral=True,
    )


@bot.slash_command(guild_ids=GUILD_IDS, name="help", description="Lists operator and chat commands.")
async def help_command(ctx: discord.ApplicationContext):
    if await deny_non_operator(ctx):
        return
    player = sorted(name for name, e in EFFECTS.items() if not e.admin_only and policy.is_allowed(name))
    admin = sorted(name for name, e in EFFECTS.items() if e.admin_only)
    await ctx.respond(
        "📖 **Operator commands**\n"
        "/status /adddonator /removedonator /promote /donators /logs /stats\n"
        "/reloadcommands /reconnect /console\n"
        "DM a player name to pick a rank for them.\n\n"
        f"**Donator chat commands:** {' '.join('!' + n for n in player) or '-'}\n"
        f"**Admin chat commands:** {' '.join('!' + n for n in admin)}",
        ephemeral=True,
    )


@bot.slash_command(guild_ids=GUILD_IDS, name="reloadcommands", description="Reloads commands.json from disk.")
async def reload_commands_command(ctx: discord.ApplicationContext):
    log.info(f"/reloadcommands by {ctx.author}")
    if await deny_non_operator(ctx):
        return
    policy.reload()
    await ctx.respond(
        f"🔄 Reloaded: {len(policy.allowed_commands())} commands, "
        f"{len(policy.banned_commands())} blocked, {len(policy.ranks())} ranks.",
        ephemeral=True,
    )


@bot.slash_command(guild_ids=GUILD_IDS, name="reconnect", description="Restarts the game session.")
async def reconnect_command(ctx: discord.ApplicationContext):
    log.info(f"/reconnect by {ctx.author}")
    if await deny_non_operator(ctx):
        return
    await game_session.restart()
    await ctx.respond("🔄 Game session restarting.", ephemeral=True)


@bot.slash_command(guild_ids=GUILD_IDS, name="console", description="Prints recent console log lines.")
async def console_command(
    ctx: discord.ApplicationContext,
    lines: int = Option(int, "Number of recent lines", required=False, default=1, min_value=1, max_value=10),
):
    log.info(f"/console by {ctx.author} (lines={lines})")
    if await deny_non_operator(ctx):
        return
    if not game_session.is_authenticated:
        await ctx.respond("WS not ready.", ephemeral=True)
        return

    logs = game_session.get_clean_recent_logs(num=lines)
    if logs:
        header = f"Last {len(logs)} log(s):"
        body = "\n".join(logs)
        max_len = 1980  # Discord message character limit is 2000, leave some buffer
        if len(body) > max_len:
            body = f"... (truncated)\n{body[-max_len:]}"
        response = f"{header}\n```\n{body}\n```"
    else:
        response = "Log buffer empty."

    await ctx.respond(response, ephemeral=True)


# --- Main Execution Logic ---
async def run_discord_bot():
    try:
        log.info("Attempting discord bot start...")
        async with bot:
            await bot.start(settings.discord_token)
        log.info("bot.start() completed normally.")
    except discord.LoginFailure:
        log.critical("Discord login failed. Check token.")
        shutdown_event.set()
    except asyncio.CancelledError:
        log.info("Discord bot task was cancelled.")
    except Exception as e:
        log.exception(f"Unhandled exception in run_discord_bot: {e}")
        shutdown_event.set()
    finally:
        log.info("run_discord_bot coroutine finished.")


async def main():
    loop = asyncio.get_running_loop()
    log.debug("Registering signals...")
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handle_signal, sig, None)
            log.debug(f"Registered asyncio handler for {sig}.")
        except NotImplementedError:
            log.warning(f"Asyncio handler not supported for {sig}. Using fallback.")
            signal.signal(sig, handle_signal)

    log.info(f"🚀 Donator bridge starting. Admins: {', '.join(settings.game_admins) or '-'}")
    await status_server.start()
    await probe.update_status()
    if not probe.is_online:
        log.warning("⏰ Waiting for the server to come online...")
    probe_task = loop.create_task(probe.run(), name="ProbeTask")

    log.info("Launching bot...")
    discord_task = loop.create_task(run_discord_bot(), name="DiscordBotTask")
    log.info("Waiting for shutdown signal...")
    await shutdown_event.wait()
    log.info("Shutdown event received.")

    log.info("Initiating final cleanup...")
    discovery.cancel()

    log.info("Stopping game session...")
    await game_session.stop()

    probe_task.cancel()
    await asyncio.gather(probe_task, return_exceptions=True)

    await status_server.stop()

    await notify_later.drain()

    if not bot.is_closed():
        log.info("Closing bot...")
        await bot.close()

    if not discord_task.done():
        log.info("Cancelling Discord task...")
        discord_task.cancel()
        await asyncio.gather(discord_task, return_exceptions=True)

    log.info("Cleanup complete.")


def run():
    if config.missing_settings(settings):
        log.critical("Missing config. Aborting.")
        sys.exit(1)
    asyncio.run(main())


if __name__ == "__main__":
    run()
