"""
FlightPay: Paymob payment intents and callback verification for the
flight-booking backend.
"""
__version__ = "0.1.0"
