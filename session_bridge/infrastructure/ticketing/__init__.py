from .status_probe import TicketingStatusProbe

__all__ = ['TicketingStatusProbe']
