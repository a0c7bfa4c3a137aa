import jax

# Accept/reject decisions compare errors exactly; check them in double precision.
jax.config.update("jax_enable_x64", True)
