"""Speech synthesis for spoken feedback."""
