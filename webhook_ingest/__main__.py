from webhook_ingest.serve import main

main()
