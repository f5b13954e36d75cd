"""Policy Whisperer: AI summaries, chat and legislation impact analysis for policy documents."""
