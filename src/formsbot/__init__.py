"""formsbot - moderator-defined Discord forms published to private threads."""
