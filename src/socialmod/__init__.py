"""
socialmod - Moderation and Media-Ingestion Pipeline

socialmod decides, for every piece of user-generated content on a multi-tenant
social platform, whether that content may remain visible, and produces the
resized image derivatives the rest of the platform serves.

Core Components:

- **Moderation State Machine**: Creates moderation requests on the interactive
  path, submits them to an external review provider from background workers,
  and applies provider verdicts while honouring "Rejected wins"
- **Blob/Image Gateway**: Stores blobs and image metadata, resolves CDN URLs,
  and answers existence checks
- **Resize Orchestrator**: Fans out every configured image size for an
  ingested image, idempotently and resumably
- **Push Registrations**: Device registration lifecycle and hub management for
  fire-and-forget notifications
- **Work Queues**: In-process queues whose dequeue count selects the process
  type of each background attempt

Usage:
    from socialmod.main import main
    main()  # Opens the pipeline and runs the background workers
"""
