"""GuestPass: event invitations, RSVP links and QR check-in."""
