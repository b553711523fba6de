"""Emergency nursing app.

Models, services, REST views and websocket consumers for the live
emergency request feed and caregiver offers.
"""
