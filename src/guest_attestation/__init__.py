"""Guest Attestation Service."""
