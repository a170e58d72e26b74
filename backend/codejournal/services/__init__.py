"""
Code Journal Backend — Services Layer
======================================

Service Inventory:
    - identifiers:        global user IDs `<group-number><uuid>`
    - validation:         password, names, paths, tags, line ranges, base64
    - locks:              per-file and per-submission asyncio locks
    - relational:         RelationalStore, typed reads/writes (no commits)
    - filesystem:         FileSystemStore, bodies, sidecars, metadata JSON
    - unit_of_work:       RS transaction plus FS compensations
    - approval:           review and approval state machine
    - submission_service: the submission repository
    - comment_service:    comment threads
    - user_service:       accounts and capabilities
    - reconciliation:     RS / FS consistency repair
"""
