"""ptzcast: PTZ camera control and outbound stream supervision."""

__version__ = "0.1.0"
