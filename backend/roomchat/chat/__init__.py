"""Real-time chat core: sessions, presence, rooms, typing and read receipts."""
