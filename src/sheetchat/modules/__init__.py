"""SheetChat Modules - HTTP-facing modules (files, chat)."""
