"""Ship application and HTTP access logs to Loggly in batches."""
