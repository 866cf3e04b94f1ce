"""Discord bot integration for aqbot.

The bot runs in-process with FastAPI, sharing the same event loop. It hosts
the AQ slash commands and the persistent status-board buttons, and provides
the chat adapter the reminder and auto-start scheduler jobs post through.

Optional: if DISCORD_BOT_TOKEN is not set, the app runs without Discord.
"""
