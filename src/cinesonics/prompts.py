SYSTEM_SOUNDTRACK = """You are a cinematic soundtrack concept designer. You create fictional but believable soundtrack tracklists for movie scenes. You invent creative track names and fictional artist/band names that feel authentic to the genre. Always respond with valid JSON only, no markdown."""

USER_TRACKLIST_TEMPLATE = """Create a conceptual movie soundtrack for this vibe:

"{vibe}"

Return a JSON object with this exact structure:
{{
  "albumTitle": "string - a creative, evocative album title",
  "albumArtist": "string - the main artist, composer, or 'Various Artists'",
  "genre": "string - short genre/mood label, e.g. 'Dark Electronic / Industrial'",
  "vibeTag": "string - very short 2-3 word vibe label",
  "tracks": [
    {{
      "title": "string - creative track name",
      "artist": "string - fictional artist/band name",
      "duration": "string - realistic duration like '3:42'"
    }}
  ]
}}

Requirements:
- Generate 8-12 tracks
- Track names should be cinematic, evocative, and match the vibe
- Artist names should feel authentic to the genre
- Durations should be realistic (2:30 - 6:00 range, maybe one longer atmospheric track)
- The album title should capture the essence of the movie scene
- Be creative and specific, avoid generic names

Return ONLY the JSON object, nothing else.
"""

COVER_TEMPLATE = (
    "Cinematic movie soundtrack album cover art. {vibe}. Moody atmospheric lighting, "
    "dramatic composition, professional album artwork quality, no text, no words, no letters, "
    "dark cinematic color palette with neon accents, gritty photographic style, high contrast, "
    "volumetric lighting, 4k detailed"
)
