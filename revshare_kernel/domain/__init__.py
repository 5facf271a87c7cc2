"""Pure domain layer: enums, DTOs, split and allocation arithmetic. Zero I/O."""
