"""
Things the bot reports on: sensor readings, public IP, commands
"""
