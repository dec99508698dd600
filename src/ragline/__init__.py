"""ragline — knowledge ingestion and question clustering for chatbot projects."""
