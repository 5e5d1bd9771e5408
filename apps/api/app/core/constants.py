"""Application constants."""

# Actor recorded on enrollments and notes created without a human user
SYSTEM_ACTOR = "system"
AUTOMATION_NOTE_AUTHOR = "Automation"
SYSTEM_NOTE_AUTHOR = "System"

# Time conversions (delays are stored as hours, deadlines as instants)
MS_PER_MINUTE = 60_000
MS_PER_HOUR = 3_600_000
MS_PER_DAY = 86_400_000
