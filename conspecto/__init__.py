"""Study core for the Conspecto note-taking and spaced-repetition application."""
