"""Family RSVP: capacity-limited event RSVPs for families."""
