"""Restaurant waiting-line manager.

Guests register at the shop kiosk or through the web form and get a ticket
number (`S-12`, `W-13`). One process owns the queue state and:
- serves kiosk, web and admin viewers over MQTT pub/sub
- stages a receipt for the shop kiosk's Star printer, which fetches it over
  the CloudPRNT HTTP protocol
- auto-cancels absent guests, auto-reopens a paused queue, and resets the
  day's numbering at midnight

See `waitline.app` for how to run.
"""
