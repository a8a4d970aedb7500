"""Payment domain logic: signing, flows, token chains and the transaction state machine."""
